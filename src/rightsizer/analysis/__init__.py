"""Usage statistics and right-sizing rules"""
