"""Command interpretation pipeline stages"""
