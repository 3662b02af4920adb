"""
Voice Coach - speak, get transcribed or scored, and hear a reply.

A Python application that records audio from the microphone, routes it to
either transcription (dictation) or pronunciation assessment, and can pass
the result to a text-generation backend whose reply is voiced back.
"""

__version__ = "0.1.0"
__author__ = "Brian Weaver"
__description__ = "Dictation and pronunciation practice with AI replies"
