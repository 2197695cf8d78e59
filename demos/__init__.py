"""
Radio source localization examples.

Examples:
    - Access point position and transmitted power estimation from RSSI
    - Receiver positioning from located sources and fingerprint ranking
"""
