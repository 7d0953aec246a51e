"""
Coffee crawler Django application.

This app discovers coffee products on roaster websites, extracts structured
product records with AI extraction services and keeps them up to date.
"""
