"""clipplan — declarative video templates compiled to ffmpeg renders.

A YAML template lists clips with layout, crop, rotation, trim, and pan/zoom
rules plus a layered timeline. clipplan resolves all of it into a plan of
exact pixel geometry and start/duration/trim per clip, then renders the plan
with a single ffmpeg filter graph.
"""
