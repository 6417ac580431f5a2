"""Backend for the timesheet converter: file intake and lifecycle control.

Route handlers in server.py stay thin; this package owns:
- upload validation, naming and storage under one flat root
- per-session ownership checks on every download
- admission control for expensive conversions
- batch ZIP extraction/repackaging with Zip Slip protection
- retention sweeps and period-template pre-warming

Security note:
Stored names embed a random UUID4 and a content hash so they are unguessable,
but ownership is still verified on every read. Never expose filesystem paths
in responses.
"""
