"""Clinic billing orchestration and webhook delivery service"""
