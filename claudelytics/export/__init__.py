"""
Report export to files.
"""
