"""
Unit Tests - Derived Metrics
"""
from backoffice.reporting import metrics
from backoffice.reporting.metrics import SessionStats


class TestRatios:
    """Tests for zero-safe ratios"""

    def test_round_half_up(self):
        """Test halves round away from zero"""
        assert metrics.round_half_up(2.5) == 3.0
        assert metrics.round_half_up(-2.5) == -3.0
        assert metrics.round_half_up(0.125, 2) == 0.13

    def test_zero_denominators(self):
        """Test division by zero yields 0"""
        assert metrics.safe_ratio(10, 0) == 0.0
        assert metrics.percentage(5, 0) == 0.0
        assert metrics.average_order_value(0, 0) == 0.0
        assert metrics.conversion_rate(3, 0) == 0.0

    def test_percentage(self):
        """Test one-decimal percentages"""
        assert metrics.percentage(1, 3) == 33.3
        assert metrics.fulfillment_rate(3, 4) == 75.0

    def test_conversion_rate_two_decimals(self):
        """Test conversion keeps two decimals"""
        assert metrics.conversion_rate(3, 40) == 7.5
        assert metrics.conversion_rate(1, 3) == 33.33


class TestGrowthRate:
    """Tests for period-over-period growth"""

    def test_both_empty(self):
        """Test no activity in either period is flat"""
        assert metrics.growth_rate(0, 0) == 0.0

    def test_from_nothing(self):
        """Test growth from zero is reported as 100"""
        assert metrics.growth_rate(0, 5) == 100.0

    def test_decline(self):
        """Test negative growth"""
        assert metrics.growth_rate(200, 150) == -25.0

    def test_one_decimal(self):
        """Test growth is rounded to one decimal"""
        assert metrics.growth_rate(3, 4) == 33.3


class TestTargetProgress:
    """Tests for target progress percentage"""

    def test_partial(self):
        assert metrics.target_progress(25000, 100000) == 25

    def test_clamped(self):
        """Test progress never exceeds 100 or drops below 0"""
        assert metrics.target_progress(150, 100) == 100
        assert metrics.target_progress(-5, 100) == 0

    def test_zero_target(self):
        assert metrics.target_progress(10, 0) == 0


class TestSessionStats:
    """Tests for session-derived rates"""

    def test_rates(self):
        """Test bounce, duration and depth"""
        stats = SessionStats(sessions=4, page_views=10, bounced_sessions=1, total_duration_seconds=1900)

        assert stats.bounce_rate == 25.0
        assert stats.avg_session_duration == 475.0
        assert stats.avg_pages_per_session == 2.5

    def test_empty(self):
        """Test a window without sessions reports zeros"""
        stats = SessionStats()

        assert stats.bounce_rate == 0.0
        assert stats.avg_session_duration == 0.0
        assert stats.avg_pages_per_session == 0.0


class TestFormatting:
    """Tests for dashboard display strings"""

    def test_format_change(self):
        assert metrics.format_change(12.5) == "+12.5%"
        assert metrics.format_change(-3.0) == "-3.0%"
        assert metrics.format_change(0.0) == "+0.0%"

    def test_indian_grouping(self):
        """Test lakh and crore digit grouping"""
        assert metrics.format_indian_number(999) == "999"
        assert metrics.format_indian_number(100000) == "1,00,000"
        assert metrics.format_indian_number(1234567) == "12,34,567"
        assert metrics.format_indian_number(-1500) == "-1,500"

    def test_fractions(self):
        """Test paise are shown only when present"""
        assert metrics.format_indian_number(1234.5) == "1,234.50"
        assert metrics.format_inr(2500) == "₹2,500"
