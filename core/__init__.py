"""
核心業務邏輯層

這個 package 包含所有帳本業務邏輯，包括：
- LedgerManager：回合生命週期與三個餘額的帳務
- StateMachine：集中管理回合狀態轉換
- CreditIssuer：credit 的發行、轉帳、授權與兌回
- Clock / Entropy：注入的時間與隨機來源
- Locks：並發控制工具
"""
