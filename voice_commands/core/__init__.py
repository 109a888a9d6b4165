"""Core configuration and logging"""
