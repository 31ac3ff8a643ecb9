"""Lifecycle transitions, execution and approval of recommendations"""
