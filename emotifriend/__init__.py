"""
EmotiFriend - an emotion-aware conversational companion.

Reads the user's mood from text, voice and face, replies in a chosen persona
and speaks the reply back.
"""

__version__ = "0.1.0"
