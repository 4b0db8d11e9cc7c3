"""
API 層

這個 package 只負責 HTTP 轉換，業務邏輯全部在 core.ledger_manager：
- ledgers：部署帳本、開啟/結算回合、operator 操作
- stakes：下注、贏家提領
- credits：購買、授權、兌回 credit
"""
