# Draw vs AI - Real-time Sketch Guessing Game with Hand-Tracked Drawing
# Version: 1.0.0

"""
Core modules for the draw-and-guess game:
- config: Tunable parameters
- landmarks: Landmark validation, smoothing and detection hysteresis
- gesture_logic: Gesture classification and debouncing
- frame_loop: Cancelable per-frame task
- camera: Webcam stream handler
- hand_tracking: MediaPipe hand landmark detection
- canvas: Drawing raster and input handling
- sketch_processor: Canvas to model input
- sketch_classifier: Sketch category inference
- round_engine: Live guessing and scoring
- ui: Main application interface
"""

__version__ = "1.0.0"
