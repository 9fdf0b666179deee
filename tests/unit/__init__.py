"""Unit tests for the pure domain layer, configuration and event bus"""
