"""Middleware modules: request monitoring and rate limiting"""
