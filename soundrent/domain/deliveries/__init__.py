"""Delivery domain - delivery and pickup tasks"""
