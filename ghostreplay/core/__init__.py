"""リプレイコア — セレクタ合成・要素解決・待機戦略・再生制御"""
