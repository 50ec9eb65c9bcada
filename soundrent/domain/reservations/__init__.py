"""Reservation domain - pricing, references, drafts and the save orchestration"""
