"""Services: registry, cache, history, dialect handling and metrics"""
