"""
SpotiSwitch Test Suite
"""
