"""Telephony transport helpers.

The transport is Twilio Media Streams: JSON frames over a WebSocket carrying
base64 G.711 mu-law audio at 8 kHz in 20 ms chunks.
"""
