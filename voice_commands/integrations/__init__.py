"""External classifier integrations"""
