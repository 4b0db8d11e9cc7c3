"""
服務層

這個 package 包含純計算 / 查詢邏輯，不負責狀態轉換：
- units_service：金額與 base units 的換算
- history_service：已結算回合的紀錄
"""
