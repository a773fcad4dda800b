"""Business domains"""
