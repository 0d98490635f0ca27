"""
Constants used across the rating and matchmaking system.
"""

# ELO calculation constants
INITIAL_RATING = 1200
DEFAULT_K = 32  # K-factor when experience is unknown
ELO_SCALE = 400  # Rating gap at which the favourite is expected to win 10:1
MATCH_QUALITY_SPREAD = 500  # Rating gap at which match quality reaches zero

# K-factor schedule
NEW_PLAYER_GAMES = 10
DEVELOPING_PLAYER_GAMES = 30
K_NEW_PLAYER = 40
K_DEVELOPING = 32
K_INTERMEDIATE = 24
K_ESTABLISHED = 16
INTERMEDIATE_RATING = 1400
ESTABLISHED_RATING = 1800

# Queue defaults
DEFAULT_RATING_TOLERANCE = 200
DEFAULT_RADIUS_KM = 10.0
