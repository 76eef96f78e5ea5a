"""Game engine services: phases, scoring, answers, standings and timers.

This package contains the domain logic that HTTP routes and socket handlers
import, keeping transport concerns separated from core game mechanics.
Everything here takes its store explicitly.
"""
