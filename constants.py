# constants.py
"""
Application-level constants.

These values are static and do not change between simulation runs.
They belong to the application shell (window, colors, panel layout)
rather than to the experimental configuration in config.json.
"""

# Visualization settings
# Set to True to run in borderless fullscreen mode.
# Set to False to run in a fixed-size window.
FULLSCREEN = False
WINDOW_HEIGHT = 700
UI_PANEL_WIDTH = 300
FPS = 60
BACKGROUND_COLOR = (24, 24, 24) # Dark Gray
DEFAULT_PARTICLE_RADIUS = 2

# Alpha value for the motion blur effect (0-255). Lower is a longer trail.
MOTION_BLUR_ALPHA = 60
# Alpha for the UI panel background
UI_BACKGROUND_ALPHA = 100

# Color drawn for a particle whose type has no palette entry.
FALLBACK_COLOR = (255, 255, 0) # Yellow

# A curated list of vibrant default colors for particles, used if the
# config file does not provide a color list.
VIBRANT_COLORS = [
    (255, 0, 102),   # Hot Pink
    (0, 255, 255),   # Cyan
    (255, 204, 0),   # Gold
    (0, 255, 102),   # Bright Green
    (204, 0, 255),   # Purple
    (255, 102, 0)    # Orange
]

# Default location of the experiment configuration.
DEFAULT_CONFIG_PATH = 'config.json'
