"""
ghostreplay — Web ページ操作のリプレイコア

記録時に要素からロケータ集合を合成し、再生時にロケータ集合から
要素を再特定して記録された操作を再実行する。
"""

__version__ = "0.1.0"
