"""Shared utilities: logging, configuration validation and API helpers"""
