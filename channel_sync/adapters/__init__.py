"""
Remote channel-manager adapters
"""
