from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PortalSelectors:
    """
    The ERP portal is a server-rendered app with a jqGrid notice board; markup may change over time.
    Keep all UI selectors/text hooks here for easy maintenance.
    """

    # Login (SSO)
    login_page_url_pattern: str = r"SSOAdministration/login\.htm"
    roll_no_input: str = 'input[name="user_id"]'
    password_input: str = 'input[name="password"]'
    security_question_prompt: str = "#answer_div:not(.hidden)"
    security_question_text: str = "#question"
    security_answer_input: str = "#answer"
    request_otp_button: str = "#getotp"
    otp_input: str = "#email_otp1"
    login_submit_button: str = "#loginFormSubmitButton"
    login_error_indicators: str = '.error, .alert-danger, [class*="error"]'

    # Notice board (jqGrid)
    listing_container: str = "#grid54"
    listing_rows: str = "#grid54 tr.jqgrow"
    cell_row_num: str = '[aria-describedby="grid54_rn"]'
    cell_id: str = '[aria-describedby="grid54_id"]'
    cell_type: str = '[aria-describedby="grid54_type"]'
    cell_category: str = '[aria-describedby="grid54_category"]'
    cell_company: str = '[aria-describedby="grid54_company"]'
    cell_notice_at: str = '[aria-describedby="grid54_noticeat"]'
    cell_noticed_by: str = '[aria-describedby="grid54_noticeby"]'
    # The notice cell holds a link whose `title` is a truncated summary and whose click opens the dialog.
    cell_notice_link: str = '[aria-describedby="grid54_notice"] a'
    notice_summary_attribute: str = "title"

    # Notice detail dialog (jQuery UI)
    detail_content: str = ".ui-dialog:visible .ui-dialog-content"
    detail_close_button: str = ".ui-dialog:visible .ui-dialog-titlebar-close"
