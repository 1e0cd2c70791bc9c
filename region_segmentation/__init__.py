"""
Region segmentation module for LBL component extraction.

This module locates candidate component regions (logos, text blocks, charts,
tables, icons, product images) inside a raster image using heuristic computer
vision techniques, and converts them into named, percentage-based bounding boxes.
"""
