"""
Position engine algorithms: fixed-point math, curve simulation, valuation,
sizing, rebalancing, reinvestment and keeper advice.
"""
