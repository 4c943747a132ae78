"""Live fair probability engine for 15-minute crypto up/down markets.

Trade prices from several exchanges drive per-venue diffusion models,
which are basis-calibrated to the prediction-market mid and averaged into
one published UP/DOWN estimate per asset.

Usage::

    python3 -m fair_bot --duration-minutes 60
"""
