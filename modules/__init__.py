"""Shared building blocks: transport interface, scaling, reporting, state store and configuration."""
