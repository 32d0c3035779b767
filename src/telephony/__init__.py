"""Call audio handling for Twilio Media Streams.

G.711 helpers, hold audio and the per-call relay between the carrier stream
and the realtime model session.
"""
