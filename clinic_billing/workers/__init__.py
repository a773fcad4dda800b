"""Standalone background workers"""
