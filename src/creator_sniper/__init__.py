"""
Creator Coin Sniper.

An unattended agent that watches the coin factory for newly created
creator coins, gates each launch behind a creator credibility check and
manages accepted positions through a laddered partial-exit strategy with
stop-loss and time-limit safety nets.
"""

__version__ = "0.1.0"
