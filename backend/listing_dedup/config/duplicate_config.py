"""
重複検出関連の設定値
"""

# 各類似度の重み（合計1.0、有効化した要素のみ加算）
ADDRESS_WEIGHT = 0.40
SPECS_WEIGHT = 0.35
TITLE_WEIGHT = 0.15
DESCRIPTION_WEIGHT = 0.10

# 有効化の閾値（この値を超えた場合のみ合計と要素数に含める）
ADDRESS_ACTIVATION_THRESHOLD = 70
SPECS_ACTIVATION_THRESHOLD = 60
TITLE_ACTIVATION_THRESHOLD = 40
DESCRIPTION_ACTIVATION_THRESHOLD = 30

# 重複候補とする条件
MIN_ACTIVE_COMPONENTS = 2    # 有効化された要素の最小数
MIN_CONFIDENCE_SCORE = 85    # 合計スコアの下限

# 住所スコアの配点
STREET_POINTS = 40
STREET_NUMBER_BONUS_POINTS = 20  # 通り名が一致した場合のみ配点対象
CITY_POINTS = 20
ZIP_CODE_POINTS = 20
REGION_POINTS = 10
COUNTRY_POINTS = 10

# スペックスコアの配点
BEDROOMS_POINTS = 25
BATHROOMS_POINTS = 15
SQUARE_METERS_POINTS = 30
MONTHLY_RENT_POINTS = 30

# 許容誤差（大きい方の値に対する比率）
SQUARE_METERS_TOLERANCE = 0.05
MONTHLY_RENT_TOLERANCE = 0.10

# 監査ログの取得上限
AUDIT_LOG_DEFAULT_LIMIT = 100
