"""スクリプト DSL — データモデル・パーサー・変数注入・Linter"""
