"""Call media bridge between Twilio Media Streams and ElevenLabs Conversational AI.

Each call owns one Twilio websocket and one ElevenLabs websocket. The relay
moves frames between them and tears both down together.
"""
