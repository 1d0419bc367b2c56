import datetime as dt

import pytest

from goldsilver.engine import ParseError, parse_date, parse_number, read_price_file, read_price_text


@pytest.mark.parametrize(
    "token, expected",
    [
        ("2020-01-05", "2020-01-05"),
        (" 2020-01-05 ", "2020-01-05"),
        ("43831", "2020-01-01"),
        ("1", "1899-12-31"),
        (43831, "2020-01-01"),
        (43831.75, "2020-01-01"),
        ("03/04/2021", "2021-03-04"),
        ("25/12/2020", "2020-12-25"),
        ("12-25-2020", "2020-12-25"),
        ("5-6-99", "1999-05-06"),
        ("5/6/05", "2005-05-06"),
        ("1/1/69", "2069-01-01"),
        ("1/1/70", "1970-01-01"),
        ("March 5, 2020", "2020-03-05"),
        (dt.date(2021, 7, 4), "2021-07-04"),
        (dt.datetime(2020, 1, 2, 15, 30), "2020-01-02"),
    ],
)
def test_parse_date_recognised_forms(token, expected):
    assert parse_date(token) == expected


@pytest.mark.parametrize(
    "token",
    [None, "", "   ", True, "not a date", "2020-02-30", "31/02/2020", float("nan"), -5, "now", "today", "Tomorrow"],
)
def test_parse_date_signals_unparseable(token):
    assert parse_date(token) is None


@pytest.mark.parametrize(
    "token, expected",
    [
        ("$1,234.50", 1234.5),
        ("  -3.25 ", -3.25),
        ("USD 1,800", 1800.0),
        ("17", 17.0),
        (5, 5.0),
        (17.25, 17.25),
    ],
)
def test_parse_number_strips_noise(token, expected):
    assert parse_number(token) == pytest.approx(expected)


@pytest.mark.parametrize("token", [None, "", "abc", "1.2.3", "-", float("nan"), float("inf"), False])
def test_parse_number_signals_unparseable(token):
    assert parse_number(token) is None


def test_csv_columns_matched_by_name_and_bad_rows_dropped():
    text = "\n".join(
        [
            "Silver,Date,Gold",
            '17.00,2020-01-02,"$1,550.00"',
            "16.50,01/01/2020,1500",
            "n/a,2020-01-03,1520",
            "18.00,2020-01-02,1560",
            "0,2020-01-04,1530",
        ]
    )
    result = read_price_text(text)

    assert list(result.prices["date"]) == ["2020-01-01", "2020-01-02"]
    # later row for the same date wins within one source
    assert list(result.prices["gold"]) == [1500.0, 1560.0]
    assert list(result.prices["silver"]) == [16.5, 18.0]
    assert result.dropped == 2


def test_csv_accepts_xau_xag_aliases():
    text = "date,XAU (USD/oz),XAG (USD/oz)\n2020-01-01,1500,17\n"
    result = read_price_text(text)

    assert len(result.prices) == 1
    assert result.prices.iloc[0]["gold"] == 1500.0
    assert result.prices.iloc[0]["silver"] == 17.0


def test_csv_without_price_columns_is_a_parse_error():
    with pytest.raises(ParseError):
        read_price_text("date,gold\n2020-01-01,1500\n")


def test_empty_text_yields_empty_series():
    result = read_price_text("")
    assert result.empty
    assert result.dropped == 0


def test_workbook_first_sheet_is_read(tmp_path):
    openpyxl = pytest.importorskip("openpyxl")
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["Date", "Gold", "Silver"])
    sheet.append([dt.datetime(2020, 1, 1), 1500, 17])
    sheet.append([43832, "1,510", "17.2"])
    sheet.append(["bad", 1, 1])
    path = tmp_path / "prices.xlsx"
    workbook.save(path)

    result = read_price_file(path)

    assert list(result.prices["date"]) == ["2020-01-01", "2020-01-02"]
    assert list(result.prices["gold"]) == [1500.0, 1510.0]
    assert result.prices.iloc[1]["silver"] == pytest.approx(17.2)
    assert result.dropped == 1
