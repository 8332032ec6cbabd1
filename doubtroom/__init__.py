"""
doubtroom
~~~~~~~~~
DoubtRoom 实时问答后端。
"""
