"""HTTP API for the XP reward economy"""
