"""Command-line interface for mmm"""
