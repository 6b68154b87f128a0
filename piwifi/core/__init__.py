"""
In-memory router state shared by the web handlers and the connectivity monitor.
"""
