"""View-facing session facade and state objects.

- CompressorSession wires the pipeline for one open tool view
- State QObjects (tasks) carry what the view binds to
- Python -> view notifications go through session.taskEvent(dict)
"""
