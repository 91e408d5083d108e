"""
hubsync command line interface.
"""
