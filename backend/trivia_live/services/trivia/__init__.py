"""Trivia domain services: scoring, the room state machine, the submission
ledger, the room coordinator, question generation and answer timers.

This package contains the game rules and should be imported by HTTP routes
and socket handlers, keeping transport concerns separated from core game
mechanics.
"""
