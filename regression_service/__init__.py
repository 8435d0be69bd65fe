"""Linear regression training and inference over user-selected table columns"""
