"""routeboard package"""
