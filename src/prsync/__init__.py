"""
prsync - run one rsync transfer as a pool of parallel rsync workers.
"""

__version__ = "0.1.0"
